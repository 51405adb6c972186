"""HTTP boundary of xmrspc."""
