"""Course feedback: anonymous session access and response submission."""
