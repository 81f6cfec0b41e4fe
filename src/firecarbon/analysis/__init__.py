from firecarbon.analysis.summary import (
    summarize_inclusion,
    write_variable_importance,
)

__all__ = ["summarize_inclusion", "write_variable_importance"]
