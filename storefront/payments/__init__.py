"""Order/payment state machine, order storage and the acquiring gateway."""
