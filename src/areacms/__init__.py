"""areacms: multi-tenant content backend."""
