from __future__ import annotations

import argparse
import logging

from mtpmfit.fit.curve_fitter import CurveFitConfig
from mtpmfit.fit.types import FitMethod, InvalidSeriesError
from mtpmfit.pipelines.fit_migration import run_batch_fit, run_single_fit


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("input", help="Input table (.csv or .xlsx)")
    p.add_argument("--time-col", default="FU_month", help="Follow-up time column (one unit for the whole table)")
    p.add_argument("--value-col", default="MTPM", help="Group mean MTPM column")
    p.add_argument("--out", default=None, help="Write the result table here (.csv or .xlsx)")
    p.add_argument("--max-nfev", type=int, default=2000, help="Evaluation budget per solver")
    p.add_argument("--no-fallback", action="store_true", default=False,
                   help="Only use the bounded solver; unconverged groups are reported as unfit")
    p.add_argument("--loglevel", default="INFO")


def _fit_config(args: argparse.Namespace) -> CurveFitConfig:
    return CurveFitConfig(
        max_nfev=int(args.max_nfev),
        fallback_maxfev=int(args.max_nfev),
        enable_fallback=not args.no_fallback,
    )


def add_fit_subcommand(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("fit", help="Fit one curve to a single group (time 0 with MTPM 0 included).")
    _add_common_args(p)
    p.add_argument("--plot", default=None, help="Optional HTML file for the fitted curve")
    p.set_defaults(_fn=_run_fit)


def add_batch_subcommand(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("batch", help="Fit one curve per group identifier.")
    _add_common_args(p)
    p.add_argument("--group-col", default="ID", help="Group identifier column")
    p.add_argument("--n-jobs", type=int, default=1, help="Parallel workers (-1 = all cores)")
    p.set_defaults(_fn=_run_batch)


def _run_fit(args: argparse.Namespace) -> int:
    try:
        result, table, series = run_single_fit(
            input_path=args.input,
            time_col=args.time_col,
            value_col=args.value_col,
            out_path=args.out,
            fit_config=_fit_config(args),
            loglevel=args.loglevel,
        )
    except (InvalidSeriesError, ValueError, FileNotFoundError) as e:
        logging.error(str(e))
        return 2

    print(table.to_string(index=False))

    if args.plot:
        from mtpmfit.viz.payloads import curve_payload, make_fit_figure

        make_fit_figure(curve_payload(series, result)).write_html(args.plot)
        print(f"[OK] plot -> {args.plot}")
    return 0


def _run_batch(args: argparse.Namespace) -> int:
    try:
        results, table = run_batch_fit(
            input_path=args.input,
            group_col=args.group_col,
            time_col=args.time_col,
            value_col=args.value_col,
            out_path=args.out,
            n_jobs=args.n_jobs,
            fit_config=_fit_config(args),
            loglevel=args.loglevel,
        )
    except (InvalidSeriesError, ValueError, FileNotFoundError) as e:
        logging.error(str(e))
        return 2

    print(table[[args.group_col, "MTPMemax", "K", "method", "n_datapoints", "n_followups"]].to_string(index=False))
    n_unfit = sum(1 for r in results if r.method is FitMethod.UNFIT)
    n_invalid = sum(1 for r in results if r.method is FitMethod.INVALID)
    if n_unfit:
        print(f"{n_unfit} of {len(results)} groups could not be fit")
    if n_invalid:
        print(f"{n_invalid} of {len(results)} groups malformed (see the message column)")
    return 0
