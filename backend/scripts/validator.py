import argparse
import sys

from exemptcheck.catalogue import CatalogueLoader, CatalogueLoadError, render_rules_table
from exemptcheck.config import get_settings


def validate(rules_path: str) -> int:
    try:
        catalogue = CatalogueLoader(rules_path).load()
    except CatalogueLoadError as e:
        print(f"Invalid rule catalogue: {e}", file=sys.stderr)
        return 1

    print("# Exempt Development Rules\n")
    print(render_rules_table(catalogue))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Validate a rule catalogue and print it as a markdown table")
    parser.add_argument("rules_path", nargs="?", default=get_settings().rules_path)
    args = parser.parse_args()
    sys.exit(validate(args.rules_path))
