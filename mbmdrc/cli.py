"""Command-line interface for mbmdrc."""

import argparse
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .classifier import MBMDRClassifier
from .config import MBMDRConfig, load_config
from .errors import MBMDRError
from .search import summarize_models
from .utils import read_table, write_table
from .version import __version__

logger = logging.getLogger("mbmdrc")

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

# CLI option -> MBMDRConfig field
CONFIG_OVERRIDES = {
    "order": "order",
    "min_cell_size": "min_cell_size",
    "alpha": "alpha",
    "adjustment": "adjustment",
    "max_results": "max_results",
    "top_results": "top_results",
    "folds": "folds",
    "cv_loss": "cv_loss",
    "unknown_policy": "unknown_policy",
    "model_statistic": "model_statistic",
    "threads": "n_workers",
    "seed": "seed",
}


def _add_general_options(parser: argparse.ArgumentParser) -> None:
    general_group = parser.add_argument_group("General Options")
    general_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default="INFO",
        help="Set the logging level",
    )
    general_group.add_argument(
        "--log-file", help="Path to a file to write logs to (in addition to stderr)."
    )


def create_parser() -> argparse.ArgumentParser:
    """Create and return the argument parser for the mbmdrc CLI."""
    parser = argparse.ArgumentParser(
        description="mbmdrc: MB-MDR interaction detection and ensemble risk prediction."
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mbmdrc {__version__}",
        help="Show the current version and exit",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # fit
    fit_parser = subparsers.add_parser("fit", help="Fit an MB-MDR classifier and save it as JSON")
    _add_general_options(fit_parser)
    fit_parser.add_argument(
        "-c", "--config", default=None, help="Path to configuration file (JSON)"
    )

    io_group = fit_parser.add_argument_group("Core Input/Output")
    io_group.add_argument(
        "--data", required=True, help="Input table (tab-separated, or .csv; may be gzipped)"
    )
    io_group.add_argument("--outcome", required=True, help="Name of the outcome column")
    io_group.add_argument(
        "--features",
        nargs="+",
        default=None,
        help="Feature columns (default: every column except the outcome)",
    )
    io_group.add_argument("--output", required=True, help="Path of the model JSON to write")
    io_group.add_argument(
        "--summary", default=None, help="Optional path for a per-model summary table"
    )

    model_group = fit_parser.add_argument_group("Model Search")
    model_group.add_argument(
        "--order", type=int, nargs="+", choices=[1, 2], default=None, help="Interaction orders"
    )
    model_group.add_argument(
        "--min-cell-size", type=int, default=None, help="Minimum observations per cell"
    )
    model_group.add_argument("--alpha", type=float, default=None, help="Cell test level")
    model_group.add_argument(
        "--adjustment",
        choices=["NONE", "ADDITIVE", "CODOMINANT"],
        default=None,
        help="Main-effect adjustment of the outcome",
    )
    model_group.add_argument(
        "--model-statistic",
        choices=["sum_chi2", "hl_max"],
        default=None,
        help="Statistic used to rank models",
    )
    model_group.add_argument(
        "--max-results", type=int, default=None, help="Number of top models to keep"
    )

    ensemble_group = fit_parser.add_argument_group("Ensemble & Cross-Validation")
    ensemble_group.add_argument(
        "--top-results",
        type=int,
        default=None,
        help="Ensemble size, or upper bound of the CV search with --folds/--cv-loss",
    )
    ensemble_group.add_argument(
        "--folds", type=int, default=None, help="Internal cross-validation folds (2-10)"
    )
    ensemble_group.add_argument(
        "--cv-loss", choices=["auc", "bac"], default=None, help="Cross-validation loss"
    )
    ensemble_group.add_argument(
        "--unknown-policy",
        choices=["gap", "global_mean"],
        default=None,
        help="Contribution of O/N cells to predictions",
    )
    ensemble_group.add_argument("--seed", type=int, default=None, help="Fold assignment seed")

    performance_group = fit_parser.add_argument_group("Performance & Processing")
    performance_group.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Worker processes for the model search (-1 = all cores)",
    )

    # predict
    predict_parser = subparsers.add_parser("predict", help="Predict with a saved classifier")
    _add_general_options(predict_parser)
    pio_group = predict_parser.add_argument_group("Core Input/Output")
    pio_group.add_argument("--model", required=True, help="Model JSON written by 'mbmdrc fit'")
    pio_group.add_argument("--data", required=True, help="Table of samples to predict")
    pio_group.add_argument(
        "--output", default=None, help="Output table (default: stdout, tab-separated)"
    )
    pio_group.add_argument(
        "--id-column", default=None, help="Column copied from the input to the output"
    )
    pred_group = predict_parser.add_argument_group("Prediction")
    pred_group.add_argument(
        "--type",
        choices=["response", "prob", "score", "scoreprob"],
        default="response",
        help="Prediction type",
    )
    pred_group.add_argument(
        "--top-results", type=int, default=None, help="Ensemble size (default: fitted value)"
    )
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    logger.setLevel(LOG_LEVEL_MAP[args.log_level])
    if args.log_file:
        log_file_path = Path(args.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        fh = logging.FileHandler(args.log_file)
        fh.setLevel(LOG_LEVEL_MAP[args.log_level])
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        logger.addHandler(fh)
        logger.debug(f"Logging to file enabled: {args.log_file}")


def build_config(args: argparse.Namespace) -> MBMDRConfig:
    """Merge the configuration file with the options given on the command line."""
    cfg: Dict[str, Any] = load_config(args.config)
    logger.debug(f"Configuration loaded: {cfg}")
    for option, key in CONFIG_OVERRIDES.items():
        value = getattr(args, option, None)
        if value is not None:
            cfg[key] = value
    return MBMDRConfig.from_dict(cfg)


def run_fit(args: argparse.Namespace) -> int:
    """Fit a classifier on ``args.data`` and save it to ``args.output``."""
    config = build_config(args)
    df = read_table(args.data)
    clf = MBMDRClassifier(config).fit(df, args.outcome, features=args.features)
    clf.save(args.output)

    if clf.cv_performance is not None:
        mean_loss = clf.cv_performance.groupby("top_results")["cv_loss"].mean()
        logger.info(
            f"Mean CV {config.cv_loss} at selected size {clf.top_results}: "
            f"{mean_loss.loc[clf.top_results]:.4f}"
        )
    if args.summary:
        write_table(summarize_models(clf.models), args.summary)
    return 0


def _prediction_frame(predictions: Any) -> pd.DataFrame:
    if isinstance(predictions, pd.DataFrame):
        return predictions.rename(columns=lambda level: f"prob_{level}").reset_index(drop=True)
    return pd.DataFrame({"prediction": list(predictions)})


def run_predict(args: argparse.Namespace) -> int:
    """Predict ``args.data`` with the classifier stored in ``args.model``."""
    clf = MBMDRClassifier.load(args.model)
    df = read_table(args.data)
    predictions = clf.predict(df, type=args.type, top_results=args.top_results)
    out = _prediction_frame(predictions)
    if args.id_column:
        if args.id_column not in df.columns:
            raise MBMDRError(f"ID column '{args.id_column}' not found in data")
        out.insert(0, args.id_column, df[args.id_column].to_numpy())
    write_table(out, args.output)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run main entry point for the mbmdrc CLI.

    Steps:
        1. Parse arguments.
        2. Configure logging.
        3. Run the ``fit`` or ``predict`` subcommand.

    Errors raised by the library, missing files and malformed configuration
    are logged and turned into exit status 1.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    args = create_parser().parse_args(argv)
    _configure_logging(args)
    logger.debug(f"CLI arguments: {args}")

    start_time = datetime.datetime.now()
    logger.info(f"Run started at {start_time.isoformat()}")
    commands = {"fit": run_fit, "predict": run_predict}
    try:
        status = commands[args.command](args)
    except (MBMDRError, FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1

    logger.info(f"Run ended after {datetime.datetime.now() - start_time}")
    return status


if __name__ == "__main__":
    sys.exit(main())
