"""Spotify Web API and OAuth transport."""
