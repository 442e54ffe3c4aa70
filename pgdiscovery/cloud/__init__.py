"""Cloud API clients used by discovery providers."""
