import sys
import tempfile
from pathlib import Path
# Add src to path
sys.path.append('src')

from pdf_toolkit_backend.configuration import load_settings
from pdf_toolkit_backend.converters import ConverterAdapter
from pdf_toolkit_backend.errors import ConversionFailed, ConverterUnavailable


def check_converters():
    print("Loading settings...")
    settings = load_settings()
    adapter = ConverterAdapter.from_settings(settings)

    # 1. Resolution
    print("\n1. Resolving external tools...")
    tools = adapter.describe()
    for capability, tool in tools.items():
        print(f"   {capability}: {tool or 'NOT INSTALLED'}")

    # 2. Office conversion smoke test
    print("\n2. Converting a text file to PDF...")
    with tempfile.TemporaryDirectory() as tmp:
        source = Path(tmp) / "probe.txt"
        source.write_text("PDF toolkit converter probe\n", encoding="utf-8")
        try:
            result = adapter.convert_document(source, "pdf", Path(tmp))
            print(f"   Converted with {result.tool}: {result.path.stat().st_size} bytes")
        except ConverterUnavailable as exc:
            print(f"   Skipped: {exc}")
        except ConversionFailed as exc:
            print(f"   FAILED: {exc}")
            return 1

    # 3. Compression smoke test
    if tools["office"] is not None and tools["compression"] is not None:
        print("\n3. Compressing the converted PDF...")
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "probe.txt"
            source.write_text("PDF toolkit compression probe\n", encoding="utf-8")
            pdf = adapter.convert_document(source, "pdf", Path(tmp)).path
            try:
                result = adapter.compress_document(pdf, Path(tmp) / "small.pdf")
                print(f"   Compressed with {result.tool}: {result.path.stat().st_size} bytes")
            except ConversionFailed as exc:
                print(f"   FAILED: {exc}")
                return 1

    print("\nConverter check finished.")
    return 0


if __name__ == "__main__":
    sys.exit(check_converters())
