"""Uploader plugin - wires the upload workflow to the registry."""
