"""Allow running as: python -m assessment_validator"""

import sys

from assessment_validator.main import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
