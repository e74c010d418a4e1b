"""Archiver post-processing operators and the PV expression grammar.

The archiver accepts a PV name optionally wrapped in an operator::

    pv
    operator(pv)
    operator_binSize(pv)
    operator_p1_p2(pv)
"""

from typing import Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Operator(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    params: Tuple[str, ...] = Field(default=(), description="Required parameters, in URL order")
    binned: bool = Field(True, description="Takes a bin size as its only parameter")

    def expression(self, pv: str, *args) -> str:
        """
        Render the PV expression for this operator.

        For binned operators the single optional argument is the bin size;
        parameterised operators require exactly ``len(self.params)``
        arguments.
        """
        if self.params:
            if len(args) != len(self.params):
                raise ValueError(
                    f"Operator '{self.name}' requires parameters {list(self.params)}, got {list(args)}")
            return f"{self.name}_{'_'.join(_format_param(a) for a in args)}({pv})"
        if not args:
            return f"{self.name}({pv})"
        if not self.binned or len(args) != 1:
            raise ValueError(f"Operator '{self.name}' takes no parameters besides an optional bin size")
        return f"{self.name}_{_format_param(args[0])}({pv})"

    @property
    def bins_by_size(self) -> bool:
        """True if the operator is fully described by `operator_binSize(pv)`."""
        return self.binned and not self.params


def _format_param(value) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


_OPERATORS: Sequence[Operator] = (
    # sampling
    Operator(name="firstSample", description="First sample in a bin (default sparsification operator)"),
    Operator(name="lastSample", description="Last sample in a bin"),
    Operator(name="firstFill", description="Like firstSample but fills empty bins with the previous value"),
    Operator(name="lastFill", description="Like lastSample but fills empty bins with the previous value"),
    # statistics
    Operator(name="mean", description="Average of the samples in a bin"),
    Operator(name="min", description="Minimum value in a bin"),
    Operator(name="max", description="Maximum value in a bin"),
    Operator(name="count", description="Number of samples in a bin"),
    Operator(name="ncount", description="Total number of samples in the selected time span", binned=False),
    Operator(name="nth", description="Every n-th value", params=("n",)),
    Operator(name="median", description="Median (50th percentile) of a bin"),
    Operator(name="std", description="Standard deviation of the samples in a bin"),
    Operator(name="jitter", description="Standard deviation over mean of the samples in a bin"),
    Operator(name="variance", description="Variance of the samples in a bin"),
    Operator(name="popvariance", description="Population variance of the samples in a bin"),
    Operator(name="kurtosis", description="Kurtosis of the samples in a bin"),
    Operator(name="skewness", description="Skewness of the samples in a bin"),
    # filters
    Operator(name="ignoreflyers", description="Drops points more than N standard deviations from the mean",
             params=("binSize", "numDeviations")),
    Operator(name="flyers", description="Keeps only points more than N standard deviations from the mean",
             params=("binSize", "numDeviations")),
    # server side processing
    Operator(name="linear", description="Linear arithmetic mean across the interval"),
    Operator(name="loess", description="Loess arithmetic mean across the interval"),
    Operator(name="optimized", description="Server side reduction to a requested number of points",
             params=("points",)),
    Operator(name="errorbar", description="Like mean with an additional standard deviation column"),
)

OPERATORS: Dict[str, Operator] = {op.name: op for op in _OPERATORS}


def get_operator(name: str) -> Operator:
    try:
        return OPERATORS[name]
    except KeyError:
        raise ValueError(
            f"Unknown operator '{name}'. Supported operators: {', '.join(OPERATORS)}") from None


def get_bin_operator(name: str) -> Operator:
    """
    Look up an operator usable for automatic binning, i.e. one whose only
    parameter is the bin size. Operators with their own parameters (nth,
    flyers, optimized, ...) or without a bin size (ncount) are rejected.
    """
    op = get_operator(name)
    if not op.bins_by_size:
        raise ValueError(
            f"Operator '{name}' cannot be used for binned retrieval: "
            + (f"it needs parameters {list(op.params)}" if op.params else "it takes no bin size"))
    return op


def pv_expression(pv: str, operator: Optional[str] = None, bin_size: Optional[int] = None) -> str:
    """Return ``pv``, ``operator(pv)`` or ``operator_binSize(pv)``."""
    if operator is None:
        return pv
    op = get_operator(operator)
    if bin_size is None:
        return op.expression(pv)
    return op.expression(pv, bin_size)
