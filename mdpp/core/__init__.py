"""GUI-agnostic core of MD++."""
