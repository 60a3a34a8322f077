"""Playback domain: state, polling, actions, auth lifecycle."""
