"""Working state lifecycle for installed experts."""
