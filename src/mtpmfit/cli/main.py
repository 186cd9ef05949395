# src/mtpmfit/cli/main.py
import argparse

from mtpmfit.cli.fit_cli import add_batch_subcommand, add_fit_subcommand


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mtpmfit",
        description="Michaelis-Menten curves for RSA group-mean MTPM migration data",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add_fit_subcommand(sub)
    add_batch_subcommand(sub)

    args = parser.parse_args(argv)
    return args._fn(args)  # each subcommand sets a handler


if __name__ == "__main__":
    raise SystemExit(main())
