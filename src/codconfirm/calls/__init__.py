"""Call dispatch, call attempts and call outcome handling."""
