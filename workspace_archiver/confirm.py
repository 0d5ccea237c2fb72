import re
import logging

logger = logging.getLogger(__name__)

YES_PATTERN = re.compile(r"y|yes", re.IGNORECASE)


def _ask(prompt, question):
    try:
        return (prompt or input)(question)
    except (KeyboardInterrupt, EOFError):
        print("\n\n[ABORTED] No input received. No changes made.")
        return None


def confirm_batch(entities, group_path, dry_run=False, prompt=None):
    """
    Shows every user about to be archived and asks for the exact OU path.

    A yes/no token is not accepted on purpose: retyping the path is the
    friction step for a bulk operation. Returns True to proceed.
    """
    print("")
    logger.info("Users to be archived from OU: %s", group_path)
    print("")
    for entity in entities:
        print(f"  - {entity.identifier} ({entity.display_name})")
    print("")

    if dry_run:
        logger.info("DRY RUN MODE - No changes will be made")
        return True

    logger.warning("This will archive Gmail data for all users listed above. "
                   "This does not delete or modify the accounts in any way.")
    confirmation = _ask(prompt, "Type the exact OU path to confirm: ")

    if confirmation != group_path:
        logger.error("Confirmation '%s' does not match OU path '%s'. Aborting.", confirmation or "", group_path)
        return False

    logger.info("User confirmed. Proceeding with archival...")
    return True


def confirm_single(identifier, dry_run=False, prompt=None):
    """Lighter yes/no check for --user mode, where only one mailbox is touched."""
    if dry_run:
        return True
    response = _ask(prompt, f"Archive user {identifier}? (yes/no): ")
    return response is not None and YES_PATTERN.fullmatch(response.strip()) is not None
