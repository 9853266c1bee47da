"""
Centralized logging utility for the presence verifier
Provides color-coded console output with consistent formatting
"""

# ANSI Color Codes
class Colors:
    """ANSI escape codes for terminal colors"""
    RESET = '\033[0m'
    ORANGE = '\033[38;5;214m'
    GREEN = '\033[38;5;46m'
    RED = '\033[38;5;196m'
    YELLOW = '\033[38;5;208m'
    CYAN = '\033[38;5;51m'
    MAGENTA = '\033[38;5;201m'


class Logger:
    """
    Centralized logging with color support.
    Provides consistent formatting for all output types.
    """

    # Set to False to silence all output (tests)
    enabled: bool = True

    # Debug lines are only printed in verbose mode
    verbose: bool = False

    @staticmethod
    def _emit(line: str) -> None:
        if Logger.enabled:
            print(line, flush=True)

    @staticmethod
    def success(message: str) -> None:
        """Print success message with green checkmark"""
        Logger._emit(f"{Colors.GREEN}✓{Colors.RESET} {message}")

    @staticmethod
    def error(message: str) -> None:
        """Print error message with red X"""
        Logger._emit(f"{Colors.RED}✗{Colors.RESET} {message}")

    @staticmethod
    def info(message: str) -> None:
        """Print info message with cyan color"""
        Logger._emit(f"{Colors.CYAN}[INFO]{Colors.RESET} {message}")

    @staticmethod
    def warning(message: str) -> None:
        """Print warning message with yellow color"""
        Logger._emit(f"{Colors.YELLOW}[WARNING]{Colors.RESET} {message}")

    @staticmethod
    def debug(tag: str, message: str) -> None:
        """Print debug message with orange color (verbose mode only)"""
        if Logger.verbose:
            Logger._emit(f"{Colors.ORANGE}[{tag}]{Colors.RESET} {message}")

    @staticmethod
    def section(title: str) -> None:
        """Print section header with cyan color"""
        Logger._emit(f"\n{Colors.CYAN}=== {title} ==={Colors.RESET}")

    @staticmethod
    def header(text: str) -> None:
        """Print major header with separator"""
        Logger._emit(f"{Colors.CYAN}{'='*60}{Colors.RESET}")
        Logger._emit(f"{Colors.CYAN}{text}{Colors.RESET}")
        Logger._emit(f"{Colors.CYAN}{'='*60}{Colors.RESET}")

    @staticmethod
    def result_header(text: str, ok: bool) -> None:
        """Print verdict header with green or red separator"""
        color = Colors.GREEN if ok else Colors.RED
        Logger._emit(f"\n{color}{'='*60}{Colors.RESET}")
        Logger._emit(f"{color}{text}{Colors.RESET}")
        Logger._emit(f"{color}{'='*60}{Colors.RESET}")

    @staticmethod
    def step(step_num: int, description: str) -> None:
        """Print numbered step"""
        Logger._emit(f"\n{step_num}. {description}")

    @staticmethod
    def substep(message: str) -> None:
        """Print indented substep with info"""
        Logger._emit(f"   {message}")

    @staticmethod
    def tagged(tag: str, color: str, message: str) -> None:
        """Print message with custom colored tag"""
        Logger._emit(f"{color}[{tag}]{Colors.RESET} {message}")
