"""HTTP surface for publishing events and inspecting the pipeline."""
