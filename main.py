from narextract.CLI import extract

if __name__ == "__main__":
    # Example jobs for manual testing
    # narextract nixos/trunk-combined/nixos.iso_minimal.x86_64-linux minimal.iso --match-basename
    # narextract /nix/store/<hash>-hello-2.12.1 hello -m bin/hello
    extract()
