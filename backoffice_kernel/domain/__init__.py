"""Pure domain core: values, pricing, stock folding, invoice state machine."""
