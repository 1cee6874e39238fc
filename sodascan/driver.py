import json
import posixpath
from typing import Dict, Any, Optional

from .config import CHECKS_FILE, CONFIGURATION_FILE, DATA_SOURCE_NAME, RESULT_FILE

HEADER = """import json
from soda.scan import Scan
try:
    from soda.soda_cloud.soda_cloud import SodaCloud
except ImportError:
    from soda.cloud.soda_cloud import SodaCloud
from soda.common.logs import configure_logging

configure_logging()

scan = Scan()
scan.set_data_source_name({data_source!r})
"""

FOOTER = """
result = scan.execute()

with open({result_path!r}, 'w') as out:
    out.write(json.dumps(SodaCloud.build_scan_results(scan)))

print('::' + json.dumps({{"outputs": {{"exitCode": result}}}}) + '::')
"""


def build_driver_script(working_dir: str, verbose: bool = False,
                        variables: Optional[Dict[str, Any]] = None,
                        with_configuration: bool = True) -> str:
    """
    Generates the Python script that runs the scan inside the working directory.

    `working_dir` is the directory as the command will see it (a container mount
    for container runners). `variables` must already be rendered.
    """
    lines = [HEADER.format(data_source=DATA_SOURCE_NAME)]

    if with_configuration:
        config_path = posixpath.join(working_dir, CONFIGURATION_FILE)
        lines.append(f"scan.add_configuration_yaml_file(file_path={config_path!r})\n")
    lines.append(f"scan.add_sodacl_yaml_file({posixpath.join(working_dir, CHECKS_FILE)!r})\n")

    if verbose:
        lines.append("scan.set_verbose()\n")

    if variables is not None:
        lines.append(f"scan.add_variables(json.loads({json.dumps(variables)!r}))\n")

    lines.append(FOOTER.format(result_path=posixpath.join(working_dir, RESULT_FILE)))
    return "".join(lines)
