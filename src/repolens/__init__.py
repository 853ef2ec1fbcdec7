"""repolens — GitHub repository ingestion and question answering."""
