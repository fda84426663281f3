# Interface to the maximum-likelihood programs (IQ-TREE, RAxML-NG).

import subprocess
import os
import shutil
import logging
import re
from typing import List, Tuple, Optional

from treeforge.config import settings_manager

logger = logging.getLogger(__name__)

FLOAT_PATTERN = r"(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)"


def _check_tool_path(tool_key: str) -> Optional[str]:
    """
    Retrieves and validates the path for a given tool from settings.
    A bare command name is looked up in PATH.
    """
    tool_path = settings_manager.get_setting(f"external_tool_paths.{tool_key}")
    if not tool_path:
        logger.error(f"{tool_key.upper()} path is not configured in settings.")
        return None

    if os.path.isabs(tool_path) or os.path.exists(tool_path):
        if not os.path.isfile(tool_path):
            logger.error(f"{tool_key.upper()} path '{tool_path}' is not a file.")
            return None
        if not os.access(tool_path, os.X_OK):
            logger.error(f"{tool_key.upper()} file '{tool_path}' is not executable.")
            return None
        return tool_path

    found_path = shutil.which(tool_path)
    if found_path:
        logger.debug(f"Found {tool_key.upper()} in PATH: {found_path}")
        return found_path
    logger.error(f"{tool_key.upper()} command '{tool_path}' not found in system PATH and not a valid direct path.")
    return None


def _run_command(command: List[str], cwd: Optional[str] = None, timeout_seconds: int = 3600) -> Tuple[bool, str, str]:
    """
    Executes a command using subprocess. Returns (success, stdout, stderr).
    """
    if not command or not command[0]:
        logger.error("Invalid command provided to _run_command.")
        return False, "", "Invalid command"
    command = [str(c) for c in command]
    cmd_str_for_log = ' '.join(command)
    logger.info(f"Running command: {cmd_str_for_log} {('in ' + cwd) if cwd else ''}")
    try:
        process = subprocess.run(
            command, cwd=cwd, capture_output=True, text=True, check=False, timeout=timeout_seconds
        )
    except FileNotFoundError:
        logger.error(f"Command not found: {command[0]}. Ensure it's installed and in PATH or configured correctly.")
        return False, "", f"Command not found: {command[0]}"
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout_seconds} seconds: {cmd_str_for_log}")
        return False, "", f"Command timed out after {timeout_seconds} seconds."

    if process.stdout: logger.debug(f"Command STDOUT:\n{process.stdout.strip()}")
    # Both programs write progress to stderr as well
    if process.stderr: logger.debug(f"Command STDERR:\n{process.stderr.strip()}")

    if process.returncode == 0:
        logger.info(f"Command executed successfully: {cmd_str_for_log}")
        return True, process.stdout, process.stderr

    logger.error(f"Command failed with return code {process.returncode}: {cmd_str_for_log}")
    if process.stderr.strip():
        logger.error(f"Tool STDERR for failed command:\n{process.stderr.strip()}")
    return False, process.stdout, process.stderr


def _failure_summary(stdout: str, stderr: str) -> str:
    # IQ-TREE reports errors on stdout, RAxML-NG on either stream
    text = stderr.strip() or stdout.strip()
    return text[-200:] if text else "Unknown error."


def parse_iqtree_log_likelihood(iqtree_report_file: str) -> Optional[float]:
    """Reads 'Log-likelihood of the tree: <value>' from an IQ-TREE .iqtree report."""
    if not os.path.exists(iqtree_report_file):
        logger.error(f"IQ-TREE report file not found for parsing: {iqtree_report_file}")
        return None
    with open(iqtree_report_file, 'r', encoding='utf-8') as f:
        content = f.read()
    match = re.search(r"Log-likelihood of the tree:\s*" + FLOAT_PATTERN, content)
    if match:
        value = float(match.group(1))
        logger.info(f"IQ-TREE log-likelihood: {value}")
        return value
    logger.warning(f"Log-likelihood not found in IQ-TREE report: {iqtree_report_file}")
    return None


def parse_raxml_ng_log_likelihood(raxml_log_file: str) -> Optional[float]:
    """Reads 'Final LogLikelihood: <value>' from a RAxML-NG .raxml.log file."""
    if not os.path.exists(raxml_log_file):
        logger.error(f"RAxML-NG log file not found for parsing: {raxml_log_file}")
        return None
    with open(raxml_log_file, 'r', encoding='utf-8') as f:
        content = f.read()
    matches = re.findall(r"Final LogLikelihood:\s*" + FLOAT_PATTERN, content)
    if matches:
        value = float(matches[-1])
        logger.info(f"RAxML-NG log-likelihood: {value}")
        return value
    logger.warning(f"Final log-likelihood not found in RAxML-NG log: {raxml_log_file}")
    return None


def run_iqtree(alignment_path: str, prefix: str, working_dir: str, model: str,
               sequence_type: Optional[str] = None, starting_tree_path: Optional[str] = None,
               threads: int = 1, seed: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """
    Runs an IQ-TREE tree search with a fixed model.

    Returns:
        (True, path to <prefix>.treefile) on success, (False, error message) otherwise.
        The report with the log-likelihood is <prefix>.iqtree next to the tree file.
    """
    iqtree_path = _check_tool_path("iqtree")
    if not iqtree_path: return False, "IQ-TREE executable not found or not configured."
    if not os.path.exists(alignment_path): return False, f"Input alignment file not found: {alignment_path}"
    os.makedirs(working_dir, exist_ok=True)

    output_prefix_for_cmd = os.path.basename(prefix)
    command = [iqtree_path, "-s", os.path.abspath(alignment_path), "--prefix", output_prefix_for_cmd,
               "-m", model, "-T", str(threads) if threads > 0 else "AUTO", "-redo", "-quiet"]
    if sequence_type: command.extend(["-st", sequence_type])
    if starting_tree_path: command.extend(["-t", os.path.abspath(starting_tree_path)])
    if seed is not None: command.extend(["--seed", str(seed)])

    success, stdout, stderr = _run_command(command, cwd=working_dir)
    if not success:
        return False, f"IQ-TREE execution failed. Error: {_failure_summary(stdout, stderr)}"

    tree_file = os.path.join(working_dir, output_prefix_for_cmd + ".treefile")
    if not os.path.exists(tree_file):
        return False, f"IQ-TREE ran but tree file not found: {os.path.basename(tree_file)}"
    logger.info(f"IQ-TREE completed. Tree: {tree_file}")
    return True, tree_file


def run_raxml_ng(alignment_path: str, prefix: str, working_dir: str, model: str,
                 sequence_type: Optional[str] = None, starting_tree_path: Optional[str] = None,
                 threads: int = 1, seed: int = 12345) -> Tuple[bool, Optional[str]]:
    """
    Runs a RAxML-NG tree search with a fixed model.

    Returns:
        (True, path to <prefix>.raxml.bestTree) on success, (False, error message) otherwise.
        The log with the final log-likelihood is <prefix>.raxml.log.
    """
    raxml_ng_path = _check_tool_path("raxmlng")
    if not raxml_ng_path: return False, "RAxML-NG executable not found or not configured."
    if not os.path.exists(alignment_path):
        return False, f"RAxML-NG input alignment file not found: {alignment_path}"
    os.makedirs(working_dir, exist_ok=True)

    # --prefix is an output file prefix, files are created in the working directory
    output_prefix_for_cmd = os.path.basename(prefix)
    command = [
        raxml_ng_path, "--search", "--msa", os.path.abspath(alignment_path), "--model", model,
        "--prefix", output_prefix_for_cmd, "--seed", str(seed),
        "--threads", "auto" if threads <= 0 else str(threads), "--force",
    ]
    if sequence_type: command.extend(["--data-type", sequence_type])
    if starting_tree_path: command.extend(["--tree", os.path.abspath(starting_tree_path)])

    success, stdout, stderr = _run_command(command, cwd=working_dir)
    if not success:
        return False, f"RAxML-NG execution failed. Error: {_failure_summary(stdout, stderr)}"

    best_tree_path = os.path.join(working_dir, output_prefix_for_cmd + ".raxml.bestTree")
    if not os.path.exists(best_tree_path):
        return False, f"RAxML-NG ran but best tree file not found at {best_tree_path}."
    logger.info(f"RAxML-NG completed. Best tree: {best_tree_path}")
    return True, best_tree_path
