from firecarbon.tasks.fit import FitResult, fit_model, run_analysis

__all__ = ["FitResult", "fit_model", "run_analysis"]
