"""Plan execution, result fusion and the refinement loop."""
