"""Random-forest modelling of bird species richness from environmental covariates."""
