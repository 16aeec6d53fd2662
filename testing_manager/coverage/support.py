"""Detection of server-side coverage support and its helper SQL functions."""

import logging

import aiohttp

from testing_manager.atelier.client import AtelierClient, AtelierError

log = logging.getLogger(__name__)

# Increment whenever the DDL below changes
API_VERSION = 1
UTIL_CLASSNAME = f"TestCoverage.UI.VSCodeUtilsV{API_VERSION}"
SQL_FN_INT8BITSTRING = f"fnVSCodeV{API_VERSION}Int8Bitstring"
SQL_FN_RUNTESTPROXY = f"fnVSCodeV{API_VERSION}RunTestProxy"
SQL_SCHEMA = "TestCoverage_UI"

FUNCTIONS_DDL = (
    # Pack a native bitstring into 8-bit characters, least significant bit first
    f"""
CREATE FUNCTION {SQL_FN_INT8BITSTRING}(
  bitstring VARCHAR(32767)
)
  FOR {UTIL_CLASSNAME}
  RETURNS VARCHAR(32767)
  LANGUAGE OBJECTSCRIPT
  {{
    New output,iMod8,char,weight,i,bitvalue
    Set output = "", iMod8=-1, char=0, weight=1
    For i=1:1:$BitCount(bitstring) {{
      Set bitvalue = $Bit(bitstring, i)
      Set iMod8 = (i-1)#8
      If bitvalue {{
        Set char = char+weight
      }}
      Set weight = weight*2
      If iMod8 = 7 {{
        Set output = output_$Char(char)
        Set char = 0, weight = 1
        Set iMod8 = -1
      }}
    }}
    If iMod8 > -1 {{
      Set output = output_$Char(char)
    }}
    Quit output
  }}
""",
    # Proxy for TestCoverage.Manager.RunTest, whose userparam array can't be
    # passed by reference from a launched program
    f"""
CREATE FUNCTION {SQL_FN_RUNTESTPROXY}(
  testspec VARCHAR(32767),
  qspec VARCHAR(32767),
  coverageDetail INTEGER DEFAULT 1
)
  FOR {UTIL_CLASSNAME}
  RETURNS VARCHAR(32767)
  LANGUAGE OBJECTSCRIPT
  {{
    New userparam
    Set userparam("CoverageDetail") = coverageDetail
    Quit ##class(TestCoverage.Manager).RunTest(
      testspec,
      qspec,
      .userparam
    )
  }}
""",
)


async def supports_coverage(client: AtelierClient, namespace: str) -> bool:
    """Check that a namespace can collect coverage, installing helpers if needed."""
    log.debug("Checking coverage support for namespace %s", namespace)
    try:
        if not await client.doc_exists(namespace, "TestCoverage.Data.CodeUnit.cls"):
            return False
        if await client.doc_exists(namespace, f"{UTIL_CLASSNAME}.cls"):
            return True
    except aiohttp.ClientError as exc:
        log.warning("Coverage support probe failed for %s: %s", namespace, exc)
        return False

    return await create_sql_util_functions(client, namespace)


async def create_sql_util_functions(client: AtelierClient, namespace: str) -> bool:
    """Create the helper SQL functions; False if any statement fails."""
    log.info("Creating SQL helper functions class %s in %s", UTIL_CLASSNAME, namespace)
    for ddl in FUNCTIONS_DDL:
        try:
            await client.query(namespace, ddl)
        except (AtelierError, aiohttp.ClientError) as exc:
            log.error(
                "Failed to create SQL helper functions in namespace %s: %s",
                namespace,
                exc,
            )
            return False
    return True
