"""cargo-lockdiff: review what changed between two versions of a Cargo.lock."""

__version__ = "0.3.0"
