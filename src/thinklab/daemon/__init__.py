"""ThinkLab ledger daemon: storage, gateway, sweep and HTTP surface."""
