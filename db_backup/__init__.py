"""Scheduled logical database backups to S3-compatible object storage."""
