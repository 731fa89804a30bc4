#!/usr/bin/env python3

import argparse
import codecs
import logging
import os
import sys
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_FALLBACK_GROUP = 'Unknown'
DEFAULT_EXTENSION = '.m3u'
DEFAULT_LOG_FILE = 'logs/m3u_group_splitter.log'

EXTINF_PREFIX = '#EXTINF:'
M3U_HEADER = '#EXTM3U'
GROUP_TITLE_KEY = 'group-title='

logger = logging.getLogger('m3u_group_splitter')

# Load environment variables from .env file
load_dotenv()


def setup_logging(log_file: str = DEFAULT_LOG_FILE) -> logging.Logger:
    """Set up logging to file and console without rotation or limits"""
    logger.setLevel(logging.DEBUG)

    # Create file handler which logs all messages
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)

    # Create console handler for progress messages
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    # Avoid duplicate handlers when running multiple times
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Load the YAML config and apply defaults.

    Args:
        path: Path to the config file, or None to use the defaults only

    Returns:
        Dictionary with fallback_group, file_extension and encoding
    """
    raw_config: Any = {}
    if path:
        if not os.path.exists(path):
            raise FileNotFoundError(f'Config file not found: {path}')
        with open(path, 'r', encoding='utf-8') as handle:
            raw_config = yaml.safe_load(handle) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f'Config file must contain a mapping: {path}')

    def value(key: str, default: str) -> str:
        # A blank key loads as None
        raw = raw_config.get(key)
        return default if raw is None else str(raw)

    config = {
        'fallback_group': value('fallback_group', DEFAULT_FALLBACK_GROUP),
        'file_extension': value('file_extension', DEFAULT_EXTENSION),
        'encoding': value('encoding', 'utf-8'),
    }

    if not config['fallback_group']:
        raise ValueError("Config 'fallback_group' must not be empty")
    if config['file_extension'].strip('.') == '':
        raise ValueError("Config 'file_extension' must not be empty")
    if not config['file_extension'].startswith('.'):
        config['file_extension'] = '.' + config['file_extension']
    try:
        codecs.lookup(config['encoding'])
    except LookupError:
        raise ValueError(f"Config 'encoding' is not a known encoding: {config['encoding']}")

    return config


class Channel(NamedTuple):
    """One playlist entry: a descriptor line and the locator that follows it."""

    extinf_line: str
    url: str
    group_name: str


def parse_group_name(extinf_line: str) -> Optional[str]:
    """
    Extract the group-title attribute value from an EXTINF line.

    Double quotes are tried first, then single quotes. The value runs up to the
    next matching quote; escaped quotes are not supported.

    Args:
        extinf_line: The descriptor line

    Returns:
        The group name (possibly empty), or None if no group-title is present
    """
    for quote in ('"', "'"):
        key = GROUP_TITLE_KEY + quote
        start = extinf_line.find(key)
        if start == -1:
            continue
        start += len(key)
        end = extinf_line.find(quote, start)
        if end != -1:
            return extinf_line[start:end]

    return None


def parse_m3u_lines(lines: Iterable[str], fallback_group: str = DEFAULT_FALLBACK_GROUP) -> List[Channel]:
    """
    Parse playlist lines into channels.

    Args:
        lines: Raw lines of the playlist
        fallback_group: Group name used when a descriptor has no group-title

    Returns:
        List of channels in source order
    """
    lines = list(lines)
    channels = []
    i = 0

    while i < len(lines):
        line = lines[i].strip()

        # Anything that is not a descriptor (header, comments, stray URLs) is skipped
        if not line.startswith(EXTINF_PREFIX):
            i += 1
            continue

        if i + 1 >= len(lines):
            logger.debug(f"Dropping EXTINF line without URL: {line}")
            break

        url = lines[i + 1].strip()
        group_name = parse_group_name(line)
        if group_name is None:
            logger.debug(f"No group-title found, using '{fallback_group}': {line}")
            group_name = fallback_group

        channels.append(Channel(extinf_line=line, url=url, group_name=group_name))
        i += 2

    return channels


def parse_m3u(file_path: str, fallback_group: str = DEFAULT_FALLBACK_GROUP, encoding: str = 'utf-8') -> List[Channel]:
    """
    Parse an M3U file and extract its channels.

    The file is read in full before parsing. Read and decode errors propagate.

    Args:
        file_path: Path to the M3U file
        fallback_group: Group name used when a descriptor has no group-title
        encoding: Text encoding of the file

    Returns:
        List of channels in source order
    """
    logger.info(f"Parsing M3U file: {file_path}")

    # utf-8-sig also accepts a leading BOM
    if encoding.lower().replace('_', '-') in ('utf-8', 'utf8'):
        encoding = 'utf-8-sig'

    # Split on '\n' only; a lone '\r' stays inside its line
    with open(file_path, 'r', encoding=encoding, newline='') as f:
        text = f.read()

    lines = text.split('\n')
    if lines[-1] == '':
        lines.pop()
    lines = [line.rstrip('\r') for line in lines]

    return parse_m3u_lines(lines, fallback_group)


def group_channels(channels: Iterable[Channel]) -> Dict[str, List[Channel]]:
    """
    Group channels by group name.

    Channels keep their source order within a group. Groups are keyed in the
    order they are first encountered.
    """
    groups: Dict[str, List[Channel]] = {}
    for channel in channels:
        groups.setdefault(channel.group_name, []).append(channel)
    return groups


def sanitize_filename(group_name: str) -> str:
    """Keep only ASCII letters, digits, '-', '_' and spaces, then turn spaces into underscores."""
    kept = ''.join(
        c for c in group_name
        if c.isascii() and (c.isalnum() or c in '-_ ')
    )
    return kept.strip(' ').replace(' ', '_')


def output_filename(group_name: str, extension: str = DEFAULT_EXTENSION) -> str:
    return f"{sanitize_filename(group_name)}{extension}"


def find_filename_collisions(groups: Iterable[str], extension: str = DEFAULT_EXTENSION) -> Dict[str, List[str]]:
    """
    Find output file names shared by more than one group.

    Returns:
        Mapping of file name to the group names that produce it
    """
    by_filename: Dict[str, List[str]] = {}
    for group_name in groups:
        by_filename.setdefault(output_filename(group_name, extension), []).append(group_name)
    return {name: owners for name, owners in by_filename.items() if len(owners) > 1}


def write_group_file(output_dir: str, group_name: str, channels: Iterable[Channel], extension: str = DEFAULT_EXTENSION) -> str:
    """
    Write one group's channels to an M3U file in the output directory.

    An existing file with the same name is overwritten.

    Args:
        output_dir: Existing directory to write into
        group_name: Group name, sanitized to build the file name
        channels: Channels of the group in source order
        extension: File extension including the leading dot

    Returns:
        Path of the written file
    """
    file_path = os.path.join(output_dir, output_filename(group_name, extension))

    with open(file_path, 'w', encoding='utf-8', newline='\n') as f:
        f.write(f'{M3U_HEADER}\n')
        for channel in channels:
            f.write(f"{channel.extinf_line}\n")
            f.write(f"{channel.url}\n")

    logger.debug(f"Saved group file: {file_path}")
    return file_path


def report_groups(groups: Dict[str, List[Channel]]) -> None:
    logger.info(f"Found {len(groups)} groups:")
    for group_name, channels in groups.items():
        logger.info(f"  {group_name}: {len(channels)} channels")


def write_groups(output_dir: str, groups: Dict[str, List[Channel]], extension: str = DEFAULT_EXTENSION) -> List[str]:
    """
    Write every group to its own file, stopping at the first I/O error.

    Returns:
        Paths of the written files
    """
    for filename, owners in find_filename_collisions(groups, extension).items():
        logger.warning(f"Groups {owners} all map to {filename}; the last one wins")

    saved_files = []
    for group_name, channels in groups.items():
        if not sanitize_filename(group_name):
            logger.warning(f"Group '{group_name}' has no filesystem-safe characters, writing to {extension}")
        saved_files.append(write_group_file(output_dir, group_name, channels, extension))
        logger.info(f"  Created: {output_filename(group_name, extension)} ({len(channels)} channels)")

    return saved_files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Split M3U playlists into one file per group-title')
    parser.add_argument('-i', '--input', required=True, help='Input M3U file path')
    parser.add_argument('-o', '--output', required=True, help='Output directory for split M3U files')
    parser.add_argument('--dry-run', action='store_true', help='Only show statistics without writing files')
    parser.add_argument('--config', default=os.getenv('M3U_SPLITTER_CONFIG'), help='Optional YAML config file')
    parser.add_argument('--log-file', default=os.getenv('M3U_SPLITTER_LOG_FILE', DEFAULT_LOG_FILE), help='Log file path')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(args.log_file)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Unable to load config: {e}")
        return 1

    # Validate input file exists
    if not os.path.exists(args.input):
        logger.error(f"Input file does not exist: {args.input}")
        return 1

    try:
        channels = parse_m3u(args.input, config['fallback_group'], config['encoding'])
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Could not read {args.input}: {e}")
        return 1

    if not channels:
        logger.warning("No channels found in the M3U file")
        return 0

    groups = group_channels(channels)
    report_groups(groups)

    if args.dry_run:
        logger.info("Dry-run mode: No files written.")
        return 0

    try:
        os.makedirs(args.output, exist_ok=True)
        logger.info(f"Writing output files to: {args.output}")
        write_groups(args.output, groups, config['file_extension'])
    except OSError as e:
        logger.error(f"Could not write output files: {e}")
        return 1

    logger.info("Done!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
