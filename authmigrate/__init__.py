"""Legacy account and credential migration into the relational auth schema."""

__version__ = "0.1.0"
