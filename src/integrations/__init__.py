"""HTTP integrations with the vox.ai platform."""
