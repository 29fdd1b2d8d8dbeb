"""stack_tracker: SaaS subscription inventory with normalised cost analytics."""
