"""Supabase glue, settings and data models for the coaching portal."""
