"""Pipeline stages and the retry controller that drives them."""
