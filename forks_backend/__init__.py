"""forks_backend: git repository RPC and filesystem watches for the desktop host."""
