"""Authentication, rate limiting and CORS."""
