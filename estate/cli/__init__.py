"""Administrative command line for estate."""
