"""Program analysis platform: deduplicated intake and sandboxed analysis of C packages."""
