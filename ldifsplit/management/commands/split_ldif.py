from django.core.management.base import BaseCommand, CommandError

from ldifsplit.conf import StrategyKind
from ldifsplit.results import ResultCode, SplitConfigurationError
from ldifsplit.splitter import split_ldif


class Command(BaseCommand):
    """
    Split the entries below a split base DN of one or more LDIF files into
    several sets.

    Example::

        ./manage.py split_ldif hash-on-rdn -l people.ldif \\
            -b ou=People,dc=example,dc=com --num-sets 4

    The exit status is the LDAP result code of the run: 0 on success, 82
    (local error) if any record could not be parsed or placed in a set, 89
    (parameter error) for invalid arguments.
    """

    help = "Split an LDIF file into multiple sets for use in distributed deployments."
    requires_system_checks: list[str] = []

    def add_arguments(self, parser):
        parser.add_argument(
            "strategy",
            choices=[kind.value for kind in StrategyKind],
            help="The algorithm used to pick the set for each entry below the split base.",
        )
        parser.add_argument(
            "-l",
            "--source-ldif",
            dest="sources",
            action="append",
            required=True,
            help="An LDIF file to split.  May be given more than once.",
        )
        parser.add_argument(
            "-C",
            "--source-compressed",
            action="store_true",
            help="The source files are gzip compressed.",
        )
        parser.add_argument(
            "-o",
            "--target-ldif-base-path",
            dest="target_base_path",
            help=(
                "The path output file names are based on.  Required with more "
                "than one source."
            ),
        )
        parser.add_argument(
            "-c", "--compress-target", action="store_true", help="gzip the output files."
        )
        parser.add_argument(
            "--encrypt-target", action="store_true", help="Encrypt the output files."
        )
        parser.add_argument(
            "--encryption-passphrase-file",
            help="A file whose first line is the passphrase for encrypted files.",
        )
        parser.add_argument(
            "-b", "--split-base-dn", required=True, help="The base DN of the subtree to split."
        )
        parser.add_argument(
            "--add-entries-outside-split-base-dn-to-all-sets",
            dest="to_all_sets",
            action="store_true",
            help="Write entries outside the split base DN to every set.",
        )
        parser.add_argument(
            "--add-entries-outside-split-base-dn-to-dedicated-set",
            dest="to_dedicated_set",
            action="store_true",
            help="Write entries outside the split base DN to a .outside-split file.",
        )
        parser.add_argument(
            "--schema-path",
            dest="schema_paths",
            action="append",
            help="A schema file or a directory of *.ldif schema files.",
        )
        parser.add_argument(
            "-t", "--num-threads", type=int, default=None, help="The number of worker threads."
        )
        parser.add_argument(
            "--num-sets",
            type=int,
            default=None,
            help=(
                "The number of sets to create.  For the filter strategy this "
                "defaults to one more than the number of filters."
            ),
        )
        parser.add_argument(
            "--attribute-name", help="For hash-on-attribute: the attribute to hash."
        )
        parser.add_argument(
            "--use-all-values",
            action="store_true",
            help="For hash-on-attribute: hash all values rather than only the first.",
        )
        parser.add_argument(
            "--assume-flat-dit",
            action="store_true",
            help="Treat every entry more than one level below the split base as an error.",
        )
        parser.add_argument(
            "--filter",
            dest="filters",
            action="append",
            help="For the filter strategy: a search filter.  Give one fewer than --num-sets.",
        )

    def handle(self, *args, **options):  # noqa: ARG002
        filters = options["filters"] or []
        num_sets = options["num_sets"]
        if num_sets is None:
            if options["strategy"] != StrategyKind.FILTER.value:
                msg = "--num-sets is required"
                raise CommandError(msg, returncode=ResultCode.PARAM_ERROR)
            num_sets = len(filters) + 1
        try:
            result = split_ldif(
                options["split_base_dn"],
                num_sets,
                options["sources"],
                strategy=options["strategy"],
                attribute=options["attribute_name"],
                use_all_values=options["use_all_values"],
                filters=filters,
                assume_flat_dit=options["assume_flat_dit"],
                add_outside_to_all_sets=options["to_all_sets"],
                add_outside_to_dedicated_set=options["to_dedicated_set"],
                num_threads=options["num_threads"],
                source_compressed=options["source_compressed"],
                target_base_path=options["target_base_path"],
                compress_target=options["compress_target"],
                encrypt_target=options["encrypt_target"],
                encryption_passphrase_file=options["encryption_passphrase_file"],
                schema_paths=options["schema_paths"],
            )
        except SplitConfigurationError as e:
            raise CommandError(str(e), returncode=e.result_code) from e
        if options["verbosity"] >= 1:
            for line in result.report():
                self.stdout.write(line)
        if not result.succeeded:
            msg = "One or more records could not be written to a set."
            if result.fatal_error:
                msg = result.fatal_error
            raise CommandError(msg, returncode=result.result_code)
