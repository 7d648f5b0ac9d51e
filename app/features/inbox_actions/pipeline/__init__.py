"""
Pipeline components for inbox actions.

prompt builds the extraction prompt, extractor runs batched AI extraction,
orchestrator composes a full processing run.
"""

__all__ = ["extractor", "orchestrator", "prompt"]
