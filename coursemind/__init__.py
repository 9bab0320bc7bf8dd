"""CourseMind: course material ingestion and retrieval."""
