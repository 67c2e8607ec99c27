"""Band reading, co-registration and quality masking."""
