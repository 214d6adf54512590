"""guestroot command line interface."""
