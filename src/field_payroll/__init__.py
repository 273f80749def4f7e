"""Work order lifecycle and monthly payroll settlement."""

__version__ = "1.0.0"
