"""REST API for the LEAPS tracker admin console and public pages."""
