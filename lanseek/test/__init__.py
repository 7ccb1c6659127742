# lanseek - Test Utilities
# Allows "from lanseek.test import ..." for shared fakes and helpers.
