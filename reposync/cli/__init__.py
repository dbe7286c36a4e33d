"""CLI: composición de comandos; la lógica vive en core, providers y transport."""
