# AccessHub - Command Line Interface
# Operator commands built with Typer and Rich
