"""HTTP-facing glue: error-to-response mapping and the ASGI adapter."""
